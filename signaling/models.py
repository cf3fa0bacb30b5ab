# Call data lives in the Firebase Realtime Database, not the Django DB.
# This file is kept for Django app structure compatibility.
#
# Realtime Database paths:
# - calls_sessions/{callId}: channel, token, status and audit fields
# - calls/{userId}/{deviceId}: fcmToken written by the receiving app, plus
#   platform and voipToken on iOS devices
#
# See sessions.py for the record shape and firebase_service.py for access.

"""
notifications — Multi-backend push notification dispatch.

Sub-modules:
    channels/    — Per-backend delivery (Expo, ntfy, Gotify)
    dispatcher   — Fan-out, delivery policy, targeted sends
    models       — Priority, messages and delivery outcomes
"""

"""
devices — Push-device registry (Expo tokens and city subscriptions).

Sub-modules:
    models   — Device, Platform, request bodies
    storage  — DeviceStore (JSON file keyed by token)
    service  — DeviceService
"""

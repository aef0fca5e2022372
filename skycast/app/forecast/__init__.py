"""
forecast — Geocoding and One Call forecast collaborator.

Sub-modules:
    models   — GeoLocation, ForecastSnapshot and its parts
    service  — OpenWeatherClient, Geocoder (cached), ForecastService
"""

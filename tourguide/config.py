"""Configuration settings for Tourguide."""

CONFIG = {
    "gps_poll_interval": 1,  # seconds
    "initial_fix_timeout": 10,  # seconds - give up on the first fix after this
    "arrival_radius": 50,  # meters - geofence around the active site
    "movement_threshold": 5,  # meters - suppress GPS jitter below this
    "view_center_interval": 1.0,  # seconds - max one camera move per interval
    "log_interval": 10,  # seconds between STATE log entries
    # Straight-line fallback speeds per transport mode
    "fallback_speeds": {
        "walking": 1.4,  # m/s
        "cycling": 4.0,  # m/s
        "driving": 8.33,  # m/s
    },
    # Directions provider (Mapbox-compatible)
    "directions_url": "https://api.mapbox.com/directions/v5/mapbox",
    "directions_timeout": 15,  # seconds
    # Backend API (itineraries, touring area mask, progress)
    "api_base_url": "http://localhost:5000/api",
    "api_timeout": 10,  # seconds
    # Touring area as [lon, lat] pairs; None accepts any provider route
    # until the backend mask has been fetched.
    "touring_area": None,
}

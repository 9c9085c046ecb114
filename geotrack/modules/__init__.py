"""
geotrack Modules Package - Core modules of the tracking engine

This package contains:
- geofence_manager: distance math, containment, transitions and alerts
- rfid_manager: detection ingestion, identity resolution and violation scans
"""

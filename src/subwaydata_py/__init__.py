"""
Incremental, day by day exporter of archived GTFS-realtime feeds into
published trip and stop time csv archives.
"""

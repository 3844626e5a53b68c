"""
Trip journal for a service day: decoding raw GTFS-realtime snapshots into
trips and their stop times, and serializing them into the csv export archive.
"""

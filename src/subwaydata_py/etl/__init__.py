"""
The day by day ETL: per day processing, the backlog of pending days, purging
processed days, and the command line entry point.
"""

"""
Veeam metrics collector - Veeam Backup & Replication state into InfluxDB.

This package polls a Veeam B&R server's REST API on a fixed interval, maps
sessions, managed servers, repositories, proxies and backup objects onto
time-series points and writes them to InfluxDB.
"""

__version__ = "1.0.0"

"""
Data ingestion module for FleetSync.

Handles polling the telemetry API, parsing snapshot entries, and
reconciling them into the document store and freshness index.
"""

from fleetsync.ingestion.mock_source import MockTelemetrySource
from fleetsync.ingestion.pipeline import IngestionPipeline
from fleetsync.ingestion.telemetry_client import DeviceSnapshot, TelemetryClient

__all__ = ['DeviceSnapshot', 'IngestionPipeline', 'MockTelemetrySource', 'TelemetryClient']

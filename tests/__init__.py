"""
Test suite for the Stationery Dataset Builder.

Tests run against real files on disk:
- Generated JPEG images and OIDv4 ToolKit style raw caches
- Concurrent label merging with real threads and file locks
- End-to-end builds with a stub in place of the external downloader
"""

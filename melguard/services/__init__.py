"""
MEL Guard - Services
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Alert reconciler, snapshot cache
v1.0.0 (2026-09-28): Initial services module
"""

from . import equipment_groups
from . import availability
from . import sector_matcher
from . import data_source
from . import snapshot_cache
from . import rule_store
from . import alert_store
from . import alert_reconciler
from . import mel_service

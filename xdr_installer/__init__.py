"""XDR Sensor Installer (state-driven, resumable).

Core design goals:
- Resumable across host reboots the steps themselves trigger
- Every mutation can be simulated (dry-run) with the same call path
- Deterministic CPU/NUMA/memory/disk split between sensor VMs
- Idempotent PCI passthrough
- Centralized logging
"""

__all__ = []

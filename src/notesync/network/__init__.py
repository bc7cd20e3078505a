"""
NoteSync Network Package.

Connectivity probing used to degrade sync to local-only operation.
"""

from notesync.network.connectivity import Connectivity, ConnectivityMonitor

__all__ = [
    'Connectivity',
    'ConnectivityMonitor',
]

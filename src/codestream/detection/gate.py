"""
Admission Gate
==============

Single-slot, non-blocking admission control.

The gate answers "may I start now?" and never makes the caller wait: a
caller that loses the race simply skips its work.
"""

import threading


class AdmissionGate:
    """
    Binary gate with an atomic try-acquire.
    
    Backed by a lock that is only ever acquired with blocking=False, so
    acquisition is a single test-and-set and safe across threads.
    
    Example:
        gate = AdmissionGate()
        if gate.try_acquire():
            try:
                run()
            finally:
                gate.release()
    """
    
    def __init__(self) -> None:
        self._lock = threading.Lock()
    
    @property
    def held(self) -> bool:
        return self._lock.locked()
    
    def try_acquire(self) -> bool:
        """Take the gate if free. Returns False immediately if held."""
        return self._lock.acquire(blocking=False)
    
    def release(self) -> None:
        """
        Free the gate.
        
        Raises:
            RuntimeError: If the gate is not held
        """
        self._lock.release()

"""Django signals emitted by djstar (``djstar.dispatch``).

These signals let security monitoring and audit packages observe protocol
events without tight coupling.
"""

from django.dispatch import Signal

signal_tampering_detected = Signal()
"""
Sent when a request fails locked signal validation, just before
``SignalTamperedError`` is raised.

Kwargs sent:
    sender       (type)         the SignalStore class
    request      (HttpRequest)  the offending request
    signal_name  (str or None)  the locked signal that failed, None when the
                                stored record itself could not be decrypted
    reason       (str)          one of ``"mismatch"``, ``"unexpected"``,
                                ``"invalid_record"``
"""

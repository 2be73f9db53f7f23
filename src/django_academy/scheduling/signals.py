"""Custom signals for the scheduling app.

Signals:
    booking_confirmed: Sent after a seat booking commits.
        Sender: The ``Booking`` class.
        Kwargs:
            booking: The confirmed ``Booking`` instance.
    booking_cancelled: Sent after a booking is cancelled, either by the
        user or because its schedule was cancelled or removed.
        Sender: The ``Booking`` class.
        Kwargs:
            booking: The cancelled ``Booking`` instance.
"""

from django.dispatch import Signal

booking_confirmed = Signal()
booking_cancelled = Signal()

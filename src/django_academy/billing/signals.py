"""Custom signals for the billing app.

Signals:
    order_completed: Sent after a checkout transaction commits.
        Sender: The ``Order`` class.
        Kwargs:
            order: The ``Order`` instance that was created.
            user: The user who placed the order.
"""

from django.dispatch import Signal

order_completed = Signal()

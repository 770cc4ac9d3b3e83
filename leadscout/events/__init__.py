from .emitter import Event, Subscription, emit, subscribe, subscriber_count

__all__ = ["Event", "Subscription", "emit", "subscribe", "subscriber_count"]

"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (the card API over HTTP,
configuration sources, the console) by implementing the interfaces defined
in the domain layer.
"""

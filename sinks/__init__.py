"""Pipeline sinks."""

"""Connector plugins discovered by core.plugin_loader."""

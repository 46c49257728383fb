"""Learning pipeline core: queue, classifier, knowledge store, health and self-healing."""

"""Domain layer: error taxonomy, blob store port, attachment slots and form variants."""

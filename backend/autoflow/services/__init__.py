"""Graph, layout, execution and normalization services."""

"""Master registry, peer discovery and the slave registration path."""

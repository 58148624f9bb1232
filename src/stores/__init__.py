"""Document stores: persistence adapters and change sources."""

"""Storage operations: partitioning, image writing, filesystem tools and boot loader."""

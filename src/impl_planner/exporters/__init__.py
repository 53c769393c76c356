"""Export formats for registry graphs and planned chains."""

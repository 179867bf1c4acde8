"""Real-time collaborative editing of grids."""

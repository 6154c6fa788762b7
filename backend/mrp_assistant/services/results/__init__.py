"""Result shaping, aggregation and display-name resolution."""

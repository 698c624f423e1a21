"""Pure engine logic: visibility rules, records, graph and ranking algorithms."""

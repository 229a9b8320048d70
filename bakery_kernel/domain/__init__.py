"""Pure domain core: clock, costing math, running-balance fold, events, DTOs."""

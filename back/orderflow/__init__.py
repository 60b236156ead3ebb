"""Restaurant order fulfillment core: ordering, station tracking and billing."""

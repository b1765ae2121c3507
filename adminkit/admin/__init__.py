"""Entity registrations, their capabilities and the routes planned for them."""

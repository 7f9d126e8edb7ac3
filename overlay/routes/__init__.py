"""HTTP routers for the admin override surface and the public config views."""

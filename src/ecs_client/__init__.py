"""AWS client and rolling upgrade tooling for ECS container fleets."""

__version__ = "0.1.0"

"""Pipeline job launching and condition-driven polling."""

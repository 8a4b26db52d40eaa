"""Memory subsystems for the Kiara chat client."""

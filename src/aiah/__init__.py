"""AI Against Humanity: a party card game where humans and AI personas compete."""

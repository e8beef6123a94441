"""Registry transport, references and configuration types."""

"""Cross-cutting helpers shared by the gateway and the upstream connectors."""

"""HTTP trigger for broker synchronization."""

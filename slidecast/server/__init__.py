"""HTTP job API: submit render requests, poll status, download results."""

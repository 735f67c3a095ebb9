from enclave_spine.cli import app

app()

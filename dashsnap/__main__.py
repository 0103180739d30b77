from dashsnap.cli.commands import app

app()

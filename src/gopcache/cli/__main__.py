from gopcache.cli.main import app

app()

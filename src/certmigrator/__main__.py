from certmigrator.cli import run

run()

version = 'CatIndexer 0.1.0'
version_short = version.split()[-1]

"""
Quiz content-supply engine -- async services around the corpus.

Package layout:
    paths       User data directory resolution
    main        Logging setup and maintenance CLI
    services/   Config, event bus, generative backend client, source
                selection policy, prefetch buffer, session controller,
                illustration resolver, maintenance jobs
"""

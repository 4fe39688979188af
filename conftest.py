def pytest_addoption( parser ):
    parser.addoption( "--oidc-client-file", action = "store", default = None,
                      help = "OAuth client file used by the integration tests" )
    parser.addoption( "--oidc-issuer", action = "store", default = "https://accounts.google.com",
                      help = "issuer the integration tests log in with" )

"""Queue-based dispatch of APDU commands across several SAM workers."""
from s3sidecar.cli import main


main()

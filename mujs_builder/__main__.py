from mujs_builder.builder import main

if __name__ == "__main__":
    main()

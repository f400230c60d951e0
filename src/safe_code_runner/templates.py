from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

_TEMPLATES: dict[str, dict[str, str]] = {
    "javascript": {
        "hello": 'console.log("Hello, World!");\n',
        "function": (
            "function greet(name) {\n"
            "  return `Hello, ${name}!`;\n"
            "}\n"
            "\n"
            'console.log(greet("World"));\n'
        ),
        "input": (
            "const readline = require('readline');\n"
            "const rl = readline.createInterface({ input: process.stdin });\n"
            "const lines = [];\n"
            "rl.on('line', (line) => lines.push(line));\n"
            "rl.on('close', () => {\n"
            "  const [name, age] = lines;\n"
            "  console.log(`Hello ${name}, you are ${age} years old!`);\n"
            "});\n"
        ),
    },
    "python": {
        "hello": 'print("Hello, World!")\n',
        "function": (
            "def greet(name):\n"
            '    return f"Hello, {name}!"\n'
            "\n"
            'print(greet("World"))\n'
        ),
        "input": (
            'name = input("Enter your name: ")\n'
            'age = input("Enter your age: ")\n'
            'print(f"Hello {name}, you are {age} years old!")\n'
        ),
    },
    "java": {
        "hello": (
            "public class Main {\n"
            "    public static void main(String[] args) {\n"
            '        System.out.println("Hello, World!");\n'
            "    }\n"
            "}\n"
        ),
        "input": (
            "import java.util.Scanner;\n"
            "\n"
            "public class Main {\n"
            "    public static void main(String[] args) {\n"
            "        Scanner scanner = new Scanner(System.in);\n"
            "        String name = scanner.nextLine();\n"
            "        String age = scanner.nextLine();\n"
            '        System.out.println("Hello " + name + ", you are " + age + " years old!");\n'
            "    }\n"
            "}\n"
        ),
    },
    "cpp": {
        "hello": (
            "#include <iostream>\n"
            "using namespace std;\n"
            "\n"
            "int main() {\n"
            '    cout << "Hello, World!" << endl;\n'
            "    return 0;\n"
            "}\n"
        ),
        "input": (
            "#include <iostream>\n"
            "#include <string>\n"
            "using namespace std;\n"
            "\n"
            "int main() {\n"
            "    string name;\n"
            "    int age;\n"
            "    cin >> name >> age;\n"
            '    cout << "Hello " << name << ", you are " << age << " years old!" << endl;\n'
            "    return 0;\n"
            "}\n"
        ),
    },
    "c": {
        "hello": (
            "#include <stdio.h>\n"
            "\n"
            "int main() {\n"
            '    printf("Hello, World!\\n");\n'
            "    return 0;\n"
            "}\n"
        ),
        "input": (
            "#include <stdio.h>\n"
            "\n"
            "int main() {\n"
            "    char name[50];\n"
            "    int age;\n"
            '    scanf("%49s", name);\n'
            '    scanf("%d", &age);\n'
            '    printf("Hello %s, you are %d years old!\\n", name, age);\n'
            "    return 0;\n"
            "}\n"
        ),
    },
    "go": {
        "hello": (
            "package main\n"
            "\n"
            'import "fmt"\n'
            "\n"
            "func main() {\n"
            '    fmt.Println("Hello, World!")\n'
            "}\n"
        ),
        "input": (
            "package main\n"
            "\n"
            'import "fmt"\n'
            "\n"
            "func main() {\n"
            "    var name string\n"
            "    var age int\n"
            "    fmt.Scan(&name)\n"
            "    fmt.Scan(&age)\n"
            '    fmt.Printf("Hello %s, you are %d years old!\\n", name, age)\n'
            "}\n"
        ),
    },
    "rust": {
        "hello": 'fn main() {\n    println!("Hello, World!");\n}\n',
        "input": (
            "use std::io;\n"
            "\n"
            "fn main() {\n"
            "    let mut name = String::new();\n"
            "    let mut age = String::new();\n"
            '    io::stdin().read_line(&mut name).expect("Failed to read");\n'
            '    io::stdin().read_line(&mut age).expect("Failed to read");\n'
            '    println!("Hello {}, you are {} years old!", name.trim(), age.trim());\n'
            "}\n"
        ),
    },
    "php": {
        "hello": '<?php\necho "Hello, World!\\n";\n',
        "input": (
            "<?php\n"
            "$name = trim(fgets(STDIN));\n"
            "$age = trim(fgets(STDIN));\n"
            'echo "Hello $name, you are $age years old!\\n";\n'
        ),
    },
    "csharp": {
        "hello": (
            "using System;\n"
            "\n"
            "class Program {\n"
            "    static void Main() {\n"
            '        Console.WriteLine("Hello, World!");\n'
            "    }\n"
            "}\n"
        ),
        "input": (
            "using System;\n"
            "\n"
            "class Program {\n"
            "    static void Main() {\n"
            "        string name = Console.ReadLine();\n"
            "        int age = int.Parse(Console.ReadLine());\n"
            '        Console.WriteLine($"Hello {name}, you are {age} years old!");\n'
            "    }\n"
            "}\n"
        ),
    },
}


def template_languages() -> list[str]:
    """Return languages that ship starter templates.

    Example:
        ```python
        assert "python" in template_languages()
        ```
    """
    return list(_TEMPLATES)


def get_templates(language: str) -> Mapping[str, str]:
    """Return the starter programs for a language, keyed by template name.

    Raises KeyError for languages without templates.

    Example:
        ```python
        hello = get_templates("python")["hello"]
        ```
    """
    key = language.strip().lower()
    if key not in _TEMPLATES:
        raise KeyError(f"Templates not found for language: {language}")
    return MappingProxyType(_TEMPLATES[key])
